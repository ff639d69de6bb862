"""Per-pack gates applied to every discovered pack before it is trusted."""
