# Importing a routine module registers it (see scrapers.base.register_routine)
from . import jsonld_events  # noqa: F401
