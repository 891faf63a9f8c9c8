"""
TripMate outbound gateway: resilient access to weather, places and hotel APIs.
"""
