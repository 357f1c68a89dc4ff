"""Generation task orchestration and durable result delivery."""
