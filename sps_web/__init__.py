"""HTTP layer for the SPS user API"""
