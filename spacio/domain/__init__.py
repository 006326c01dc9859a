"""Booking workflow logic: classification, authorization, cancel requests, actions."""
