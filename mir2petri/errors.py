"""
Exceptions raised by mir2petri.

Two tiers:
- TranslationError: the input cannot be translated (e.g. no entry function).
  Reported to the user, no net is produced.
- InvariantViolation: an internal invariant of the translator broke. Raised
  immediately and never caught by the engine, since continuing would produce
  a net that does not model the program.
"""


class TranslationError(Exception):
    """Raised by Translator.get_result() when the translation failed."""


class InvariantViolation(Exception):
    """Internal translator invariant broken. Translation stops."""


class DuplicateLabelError(InvariantViolation):
    """A place or transition with the same label already exists in the net."""

    def __init__(self, kind: str, label: str):
        self.kind = kind
        self.label = label
        super().__init__(f"{kind} with label {label!r} already exists in the net")


class ForeignNodeError(InvariantViolation):
    """An arc endpoint is not owned by the net, or both endpoints have the same type."""


class UnlinkedLocationError(InvariantViolation):
    """A storage location was queried in handle memory before being linked."""

    def __init__(self, kind: str, location):
        self.kind = kind
        self.location = location
        super().__init__(f"location {location} should be linked to a {kind}")


class UnsupportedCallError(InvariantViolation):
    """A call site has a shape the translator cannot handle (e.g. missing arguments)."""
