"""Unit tests for shadow_audit/scoring.py."""

import itertools
from dataclasses import fields, replace

import pytest

from shadow_audit.scoring import RiskFactors, factors_for, risk_level, score_risk

FACTOR_NAMES = [f.name for f in fields(RiskFactors)]


def _all_factor_combinations():
    for bits in itertools.product((False, True), repeat=len(FACTOR_NAMES)):
        yield RiskFactors(**dict(zip(FACTOR_NAMES, bits)))


class TestRiskLevel:
    def test_critical_boundary(self):
        assert risk_level(80) == "Critical"
        assert risk_level(100) == "Critical"

    def test_high_boundary(self):
        assert risk_level(79) == "High"
        assert risk_level(60) == "High"

    def test_medium_boundary(self):
        assert risk_level(59) == "Medium"
        assert risk_level(40) == "Medium"

    def test_low(self):
        assert risk_level(39) == "Low"
        assert risk_level(0) == "Low"


class TestScoreRisk:
    def test_no_factors_scores_zero(self):
        assert score_risk(RiskFactors()) == 0

    @pytest.mark.parametrize(
        "name,points",
        [
            ("wildcard", 20),
            ("directory_write", 15),
            ("broad_read", 10),
            ("offline_access", 5),
            ("unverified_publisher", 15),
            ("third_party", 10),
            ("expired_credentials", 10),
            ("expiring_credentials", 5),
            ("inactive_user", 10),
            ("disabled_user", 5),
            ("guest_user", 5),
            ("tenant_wide", 10),
        ],
    )
    def test_single_factor_points(self, name, points):
        assert score_risk(RiskFactors(**{name: True})) == points

    def test_permission_group_capped_at_40(self):
        f = RiskFactors(wildcard=True, directory_write=True, broad_read=True, offline_access=True)
        assert score_risk(f) == 40

    def test_everything_clamped_to_100(self):
        f = RiskFactors(**{name: True for name in FACTOR_NAMES})
        assert score_risk(f) == 100

    def test_bounds_and_monotonicity(self):
        for f in _all_factor_combinations():
            score = score_risk(f)
            assert 0 <= score <= 100
            for name in FACTOR_NAMES:
                if not getattr(f, name):
                    assert score_risk(replace(f, **{name: True})) >= score


class TestFactorsFor:
    def test_mail_and_offline_scopes(self, policy):
        f = factors_for(
            policy,
            ["Mail.ReadWrite", "offline_access"],
            publisher_verified=True,
            app_owner_type="Internal",
            credential_health="Healthy",
        )
        assert f.wildcard          # ^Mail\.
        assert f.broad_read        # contains Mail.Read
        assert f.offline_access
        assert not f.directory_write
        assert not f.third_party

    def test_directory_write(self, policy):
        f = factors_for(
            policy,
            ["Directory.ReadWrite.All"],
            publisher_verified=False,
            app_owner_type="ThirdParty",
            credential_health="EXPIRING SOON (3 days)",
        )
        assert f.directory_write
        assert f.unverified_publisher and f.third_party
        assert f.expiring_credentials and not f.expired_credentials

    def test_application_defaults_have_no_user_risk(self, policy):
        f = factors_for(
            policy,
            ["Application.ReadWrite.All"],
            publisher_verified=True,
            app_owner_type="Internal",
            credential_health="None",
            tenant_wide=True,
        )
        assert not (f.inactive_user or f.disabled_user or f.guest_user)
        assert f.tenant_wide

    def test_inactivity_threshold_is_exclusive(self, policy):
        common = dict(publisher_verified=True, app_owner_type="Internal", credential_health="None")
        assert not factors_for(policy, ["Mail.Read"], days_since_last_sign_in=180, **common).inactive_user
        assert factors_for(policy, ["Mail.Read"], days_since_last_sign_in=181, **common).inactive_user
