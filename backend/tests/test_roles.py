import pytest

from backend.features.entitlements.roles import Role


def test_precedence_order():
    assert Role.ADMIN.outranks(Role.PREMIUM)
    assert Role.PREMIUM.outranks(Role.STANDARD)
    assert not Role.STANDARD.outranks(Role.STANDARD)
    assert sorted(Role, key=lambda r: r.rank) == [Role.STANDARD, Role.PREMIUM, Role.ADMIN]


def test_only_standard_is_metered():
    assert Role.STANDARD.is_metered
    assert not Role.PREMIUM.is_metered
    assert not Role.ADMIN.is_metered


def test_billing_never_manages_admin():
    assert Role.STANDARD.is_billing_managed
    assert Role.PREMIUM.is_billing_managed
    assert not Role.ADMIN.is_billing_managed


@pytest.mark.parametrize("raw,expected", [
    (None, Role.STANDARD),
    ("premium", Role.PREMIUM),
    (" Admin ", Role.ADMIN),
    (Role.PREMIUM, Role.PREMIUM),
])
def test_parse(raw, expected):
    assert Role.parse(raw) is expected


def test_parse_unknown_role():
    with pytest.raises(ValueError):
        Role.parse("superuser")


@pytest.mark.parametrize("role", list(Role))
def test_flags_follow_precedence(role):
    assert role.is_billing_managed is (not role.outranks(Role.PREMIUM))
    assert role.is_metered is (not role.outranks(Role.STANDARD))
    assert role.is_admin is (role is Role.ADMIN)
