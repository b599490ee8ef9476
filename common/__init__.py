# Shared helpers: symbol codecs and decimal formatting
