"""SPS user API core: storage, cache backends, auth and services"""
