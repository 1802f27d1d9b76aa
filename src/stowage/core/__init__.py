"""Core engines: encryption, archives, manifests, restore and remote sync"""
