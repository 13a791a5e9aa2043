"""Search engine: query building, scoping, facets, autocomplete and federation."""
