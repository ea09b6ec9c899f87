import pytest

from overlaynet.annotations import new_annotations


@pytest.mark.parametrize(
    "prefix, expected",
    [
        ("flannel.alpha.coreos.com", "flannel.alpha.coreos.com/backend-type"),
        ("flannel.alpha.coreos.com/", "flannel.alpha.coreos.com/backend-type"),
        ("flannel.alpha.coreos.com/prefix", "flannel.alpha.coreos.com/prefix-backend-type"),
        ("flannel.alpha.coreos.com/prefix-", "flannel.alpha.coreos.com/prefix-backend-type"),
        ("org.com", "org.com/backend-type"),
        ("org9.com", "org9.com/backend-type"),
        ("org.com/9", "org.com/9-backend-type"),
    ],
)
def test_valid_prefixes(prefix, expected):
    assert new_annotations(prefix).backend_type == expected


@pytest.mark.parametrize(
    "prefix",
    ["org", "org/", "org/prefix", "org.COM", "org.com/PREFIX"],
)
def test_invalid_prefixes(prefix):
    with pytest.raises(ValueError, match="prefix must be in a format"):
        new_annotations(prefix)


def test_too_many_slashes():
    with pytest.raises(ValueError, match="at most single slash"):
        new_annotations("org.com/a/b")


def test_all_names_share_prefix():
    names = new_annotations("example.com/net")
    assert names.subnet_kube_managed == "example.com/net-kube-subnet-manager"
    assert names.backend_data == "example.com/net-backend-data"
    assert names.backend_v6_data == "example.com/net-backend-v6-data"
    assert names.backend_public_ip == "example.com/net-public-ip"
    assert names.backend_public_ipv6 == "example.com/net-public-ipv6"
    assert names.backend_public_ip_overwrite == "example.com/net-public-ip-overwrite"
    assert names.backend_public_ipv6_overwrite == "example.com/net-public-ipv6-overwrite"