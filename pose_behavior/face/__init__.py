"""Optional face detection provider (detection only, no identities)."""
