"""Chat front end: transport, presenter and dispatch."""
