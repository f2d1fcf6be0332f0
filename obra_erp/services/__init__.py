"""Domain services: one module per business area, all SQL lives here."""
