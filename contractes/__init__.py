"""Person and public-office linker for public-procurement data."""
