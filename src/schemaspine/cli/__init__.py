"""schema-spine command line (``schemaspine``)."""
