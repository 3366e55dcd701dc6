from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from iot_data.models.enums import SourceSelection


class FetchOptions(BaseModel):
    """Options accepted by every repository read.

    Accepts snake_case or camelCase keys (``force_refresh`` / ``forceRefresh``);
    unknown keys are ignored.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    source: SourceSelection = SourceSelection.AUTO
    force_refresh: bool = False
    fallback_enabled: bool = True
    ttl: float | None = None

    @classmethod
    def coerce(cls, options: "FetchOptions | dict | None") -> "FetchOptions":
        """Return *options* as a FetchOptions instance."""
        if options is None:
            return cls()
        if isinstance(options, FetchOptions):
            return options
        return cls.model_validate(options)
