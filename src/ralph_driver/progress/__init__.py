"""Progress log parsing, relevance scoring and compaction."""
