"""Trading and risk-accounting engine for prop-trading evaluation accounts."""
