import os

from pydantic import ValidationError

from tethering_verifier import constants
from tethering_verifier.lib.configuration.config_file import ConfigFile
from tethering_verifier.lib.configuration.schemas import HarnessConfig

HARNESS_CONFIG_DIR = constants.CONFIG_DIR


class HarnessConfigFile(ConfigFile):
    def __init__(self):
        super().__init__(
            os.path.join(HARNESS_CONFIG_DIR, "config.toml"),
            defaults=HarnessConfig().model_dump(),
        )

    def load_or_create_defaults(self, allow_empty: bool = False):  # type: ignore[override]
        super().load_or_create_defaults(allow_empty=allow_empty)
        try:
            self.data = HarnessConfig(**self.data).model_dump()
        except ValidationError as e:
            self.logger.warning(f"Invalid harness config, using defaults. Error: {e}")
            self.create_defaults()

    def to_config(self) -> HarnessConfig:
        return HarnessConfig(**self.data)


def load_harness_config() -> HarnessConfig:
    config_file = HarnessConfigFile()
    config_file.load_or_create_defaults()
    return config_file.to_config()
