"""
Configuration loading tests.
"""

from app.config import AppConfig, AutoDownload, load_config


def test_missing_file_uses_defaults(tmp_path):
    config = load_config(tmp_path / "missing.toml")
    assert config == AppConfig()
    assert config.policy.auto_download == AutoDownload.CHECK


def test_sections_are_loaded(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(
        """
[device]
name = "guacamole"
filename_base = "rom-13-nightly-guacamole-20250101"
android_version = "13"
ab_device = true

[server]
base_url = "https://ota.example.net"
url_suffix = "?download"

[policy]
auto_download = "full"
battery_min_level = 30
scheduler_mode = "daily"

[flash]
secure_mode = true

[codec]
patch = ["xdelta3", "-d", "-s", "{source}", "{patch}", "{output}"]
""",
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.device.name == "guacamole"
    assert config.device.ab_device is True
    assert config.server.build_list_url("guacamole") == "https://ota.example.net/guacamole.json"
    assert config.server.full_build_url("a.zip").endswith("a.zip?download")
    assert config.policy.auto_download == AutoDownload.FULL
    assert config.policy.battery_min_level == 30
    assert config.flash.secure_mode is True
    assert config.codec.patch[0] == "xdelta3"
    assert config.codec.normalize[0] == "zipadjust"


def test_unknown_keys_are_ignored(tmp_path, caplog):
    path = tmp_path / "config.toml"
    path.write_text('[device]\nname = "x"\ncolour = "blue"\n', encoding="utf-8")

    config = load_config(path)

    assert config.device.name == "x"
    assert "colour" in caplog.text
