"""RPM (yum/dnf) repository plugin."""
