"""Operations layer: the invoice pipeline and the services it calls."""
