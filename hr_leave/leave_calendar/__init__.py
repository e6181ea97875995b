"""Leave calendar module — holidays, blocked periods and weekly offs per year."""
