# SPDX-License-Identifier: LGPL-3.0-or-later
import pytest

from vmrescue.detect.distro_kind import DISTRO_TABLE, classify
from vmrescue.disk.model import DistroFamily, DistroSubtype


@pytest.mark.unit
class TestClassify:
    @pytest.mark.parametrize(
        "name,family,subtype",
        [
            ("Ubuntu", DistroFamily.UBUNTU, DistroSubtype.UBUNTU),
            ("Debian GNU/Linux", DistroFamily.DEBIAN, DistroSubtype.DEBIAN),
            ("Red Hat Enterprise Linux", DistroFamily.REDHAT, DistroSubtype.REDHAT),
            ("Oracle Linux Server", DistroFamily.REDHAT, DistroSubtype.ORACLELINUX),
            ("SLES", DistroFamily.SUSE, DistroSubtype.SLES),
            ("Microsoft Azure Linux", DistroFamily.AZURELINUX, DistroSubtype.AZURELINUX),
            ("Common Base Linux Mariner", DistroFamily.AZURELINUX, DistroSubtype.MARINER),
            ("AlmaLinux", DistroFamily.REDHAT, DistroSubtype.ALMALINUX),
            ("Rocky Linux", DistroFamily.REDHAT, DistroSubtype.ROCKYLINUX),
            ("CentOS Linux", DistroFamily.REDHAT, DistroSubtype.CENTOS),
        ],
    )
    def test_known_names(self, name, family, subtype):
        kind = classify(name)
        assert kind.family is family
        assert kind.subtype is subtype

    @pytest.mark.parametrize("name", ["Arch Linux", "", "ubuntu"])
    def test_unknown_is_undefined(self, name):
        kind = classify(name)
        assert kind.family is DistroFamily.UNDEFINED
        assert kind.subtype is DistroSubtype.UNDEFINED

    def test_first_match_wins(self):
        # "Red Hat" is listed before "CentOS"
        assert classify("CentOS Red Hat rebuild").subtype is DistroSubtype.REDHAT

    def test_table_is_ordered_tuple(self):
        assert isinstance(DISTRO_TABLE, tuple)
        assert DISTRO_TABLE[0][0] == "Ubuntu"
