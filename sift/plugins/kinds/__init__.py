# Sift Built-in Kinds
