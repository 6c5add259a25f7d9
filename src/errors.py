class ConfigError(Exception):
    """Required input is missing or unusable before any row is processed."""


class EmptyRosterError(ConfigError):
    def __init__(self, message: str = "No students found in seed roll data"):
        super().__init__(message)


class MissingColumnsError(ConfigError):
    def __init__(self, missing: list[str], source: str = "export"):
        self.missing = list(missing)
        self.source = source
        super().__init__(f"Missing required columns in {source}: {', '.join(self.missing)}")


class UnknownReaderError(ConfigError):
    def __init__(self, variant: str, reader: str, known: list[str]):
        self.variant = variant
        self.reader = reader
        super().__init__(
            f"Variant '{variant}' has no export reader '{reader}' "
            f"(set reader: to one of {', '.join(sorted(known))})"
        )


class UnknownVariantError(ConfigError):
    def __init__(self, name: str, known: list[str]):
        self.name = name
        super().__init__(f"Unknown SMS variant '{name}' (expected one of: {', '.join(sorted(known))})")
