"""
Flasher tests.
"""

import zipfile

import pytest

from delta.errors import PlatformError
from device.flasher import Flasher, RecoveryScriptFlasher, build_recovery_script, is_ab_package


def test_plain_script():
    assert build_recovery_script("rom.zip", ["extra.zip"], False, False) == [
        "set tw_signed_zip_verify 0",
        "install rom.zip",
        "install extra.zip",
        "wipe cache",
    ]


def test_signature_script_swaps_keys():
    lines = build_recovery_script("rom.zip", [], True, False)

    assert lines[:3] == [
        "cmd cat /res/keys > /res/keys_org",
        "cmd cat /cache/recovery/keys > /res/keys",
        "set tw_signed_zip_verify 1",
    ]
    assert "install rom.zip" in lines
    assert lines[-1] == "wipe cache"


def test_secure_mode_skips_extras():
    assert "install extra.zip" not in build_recovery_script("rom.zip", ["extra.zip"], False, True)


def test_is_ab_package(tmp_path):
    ab = tmp_path / "ab.zip"
    with zipfile.ZipFile(ab, "w") as zf:
        zf.writestr("payload.bin", b"x")
        zf.writestr("payload_properties.txt", b"FILE_HASH=x")
    plain = tmp_path / "plain.zip"
    with zipfile.ZipFile(plain, "w") as zf:
        zf.writestr("META-INF/com/google/android/updater-script", b"")
    broken = tmp_path / "broken.zip"
    broken.write_bytes(b"not a zip")

    assert is_ab_package(str(ab))
    assert not is_ab_package(str(plain))
    assert not is_ab_package(str(broken))


def test_base_flasher():
    flasher = Flasher()
    assert not flasher.install_ab("x.zip", lambda *a: None, lambda *a: None)
    flasher.set_installing(True)
    assert flasher.is_installing()
    with pytest.raises(PlatformError):
        flasher.install_via_recovery_script("x.zip", [], False)


def test_recovery_script_flasher_writes_and_reboots(tmp_path):
    script = tmp_path / "openrecoveryscript"
    keys = tmp_path / "keys"
    written = []
    reboots = []
    flasher = RecoveryScriptFlasher(
        str(script),
        keys_path=str(keys),
        keys="KEYDATA",
        storage_root="/storage/emulated/0",
        set_permissions=written.append,
        reboot=lambda: reboots.append(True),
    )

    flasher.install_via_recovery_script(
        "/storage/emulated/0/OpenDelta/rom.zip", ["/storage/emulated/0/FlashAfterUpdate/gapps.zip"], True
    )

    lines = script.read_text().splitlines()
    assert "install OpenDelta/rom.zip" in lines
    assert "install FlashAfterUpdate/gapps.zip" in lines
    assert keys.read_text() == "KEYDATA\n"
    assert written == [str(keys), str(script)]
    assert reboots == [True]


def test_signature_mode_needs_keys(tmp_path):
    script = tmp_path / "openrecoveryscript"
    flasher = RecoveryScriptFlasher(str(script))

    flasher.install_via_recovery_script("rom.zip", [], True)

    assert "set tw_signed_zip_verify 0" in script.read_text().splitlines()


def test_unwritable_script_raises_platform_error(tmp_path):
    flasher = RecoveryScriptFlasher(str(tmp_path / "missing" / "openrecoveryscript"))
    with pytest.raises(PlatformError):
        flasher.install_via_recovery_script("rom.zip", [], False)
