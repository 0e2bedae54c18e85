"""Domain services: permissions, audit trail, email, onboarding workflow,
legal documents, e-signatures and the standard service catalogue."""
