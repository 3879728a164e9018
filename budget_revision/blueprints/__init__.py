"""JSON blueprints: auth, proposals, reports, settings, users."""
