"""Domain layer: storage, catalog operations and the XML export pipeline."""
