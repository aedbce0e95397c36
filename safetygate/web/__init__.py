"""HTTP surface for the safety gates."""
