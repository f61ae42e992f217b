"""
Mirror Sync Engine — Fetch, install and schedule archive mirrors.

This module provides the archive fetcher, the installer, the per-mirror
sync pipeline and the cron scheduler that triggers it.
"""
