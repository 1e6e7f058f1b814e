"""Controller that drives SecretMangler reconciliation from store events."""

from secretmangler.controller.manager import SecretManglerController

__all__ = ["SecretManglerController"]
