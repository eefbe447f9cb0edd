"""Configuration module for the memcache server."""
