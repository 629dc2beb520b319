"""Appointment scheduling and reminder dispatch core."""
