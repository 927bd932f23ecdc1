import configparser
import os

DEFAULT_LOCATIONS = [
    "/etc/aetherenv/aetherenv.conf",
    os.path.expanduser("~/.config/aetherenv/aetherenv.conf"),
]

DEFAULTS = {
    "database": {
        "backend": "pacman",
        "pacman": "pacman",
        "query_mode": "local",
    },
    "stage": {
        "root": "aetherenv-root",
        "sudo": "sudo",
        "pacstrap": "pacstrap",
        "proot": "proot",
        "pkg_cache": "/var/cache/pacman/pkg",
        "bind_target": "/pkgs",
    },
    "logging": {
        "level": "info",
        "log_file": os.path.expanduser("~/.local/state/aetherenv/aetherenv.log"),
        "log_to_file": "true",
        "log_to_console": "true",
        "color_output": "true",
        "log_format": "text",
        "timestamp_utc": "false",
        "max_log_size_kb": "0",
    },
}


class AetherConfig:
    def __init__(self, locations=None):
        self.locations = locations or self._default_locations()
        self.config = configparser.ConfigParser()
        self.loaded_from = None
        self.reload()

    @staticmethod
    def _default_locations():
        env = os.environ.get("AETHERENV_CONF")
        return ([env] if env else []) + DEFAULT_LOCATIONS

    def reload(self, path=None):
        """(Re)load defaults, then the first configuration file available.

        An explicit ``path`` must exist; the default locations are optional.
        """
        self.config = configparser.ConfigParser()
        self.config.read_dict(DEFAULTS)
        self.loaded_from = None
        if path:
            if not os.path.isfile(path):
                raise FileNotFoundError(f"Configuration file not found: {path}")
            self.config.read(path)
            self.loaded_from = path
            return
        for candidate in self.locations:
            if os.path.isfile(candidate):
                self.config.read(candidate)
                self.loaded_from = candidate
                return

    def get(self, section, option, fallback=None):
        try:
            return self.config.get(section, option, fallback=fallback)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return fallback

    def getboolean(self, section, option, fallback=False):
        try:
            return self.config.getboolean(section, option, fallback=fallback)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def getint(self, section, option, fallback=0):
        try:
            return self.config.getint(section, option, fallback=fallback)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def getlist(self, section, option, fallback=None, delimiter=","):
        raw = self.get(section, option, fallback="")
        if raw:
            return [item.strip() for item in raw.split(delimiter) if item.strip()]
        return fallback or []

    def set(self, section, option, value):
        if not self.config.has_section(section):
            self.config.add_section(section)
        self.config.set(section, option, str(value))

    def __getitem__(self, section):
        if section in self.config:
            return dict(self.config[section])
        raise KeyError(f"Section '{section}' not found.")

    def __contains__(self, section):
        return section in self.config

# Global default instance shared by the other modules
config = AetherConfig()
