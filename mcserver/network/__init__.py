"""Network module for the memcache server."""
