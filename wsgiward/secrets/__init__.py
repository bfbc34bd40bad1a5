from .models import PreparedSecret, StagedSecret
from .stage import SecretStager, lookup_system_owner

__all__ = ["PreparedSecret", "StagedSecret", "SecretStager", "lookup_system_owner"]
