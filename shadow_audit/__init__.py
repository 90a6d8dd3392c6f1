"""Shadow-IT OAuth grant audit for Microsoft Entra tenants."""

__version__ = "1.2.0"
