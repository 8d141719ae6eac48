from config.settings import Config, SourceSettings, load_config

__all__ = ["Config", "SourceSettings", "load_config"]
