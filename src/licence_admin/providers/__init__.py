"""License data provider integrations."""
