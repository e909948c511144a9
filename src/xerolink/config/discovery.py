from pathlib import Path


CONFIG_FILE_NAMES = (".xerolink.toml", "xerolink.toml")


def get_xerolink_config_dir() -> Path:
    """Get the per-user configuration directory."""
    return Path("~/.config/xerolink").expanduser()


def find_toml_config_file() -> Path | None:
    """Find the TOML configuration file for xerolink.

    Searches in the following order:
    1. .xerolink.toml / xerolink.toml in current directory
    2. config.toml in ~/.config/xerolink/
    """
    candidates = [Path(name).resolve() for name in CONFIG_FILE_NAMES]
    candidates.append(get_xerolink_config_dir() / "config.toml")

    for candidate in candidates:
        if candidate.exists() and candidate.is_file():
            return candidate

    return None
