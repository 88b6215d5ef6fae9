"""Knowledge-graph notes: entities, notes, relationships and AI suggestions."""
