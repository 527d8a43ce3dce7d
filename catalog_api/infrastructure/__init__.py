"""Infrastructure: settings, database, cache, object store, staging and identity."""
