"""vault/ -- Owner-scoped storage of encrypted passwords and payment cards.

Layer rule: vault/ imports from core/ and auth.models only. It does NOT import
from api/.
"""
