"""Identity verification: face and fraud service seams and the concurrent verifier."""
