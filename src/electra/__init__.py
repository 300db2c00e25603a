"""Electra — ballot admission scoring and exactly-once vote commitment."""
