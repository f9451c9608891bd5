"""Billy: shared-profile budgeting and bill splitting on top of Supabase."""
import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"
