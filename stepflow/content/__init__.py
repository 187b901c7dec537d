# stepflow/content/__init__.py
"""Flow catalogue - the steps and copy of the shipped flows"""

from . import onboarding_steps
from . import auth_texts

__all__ = [
    'onboarding_steps',
    'auth_texts',
]
