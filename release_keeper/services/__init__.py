"""Services behind UpdaterService: source tree, versions, builds, backups and restarts."""
