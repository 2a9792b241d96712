#!/usr/bin/env python
"""Minimal GUI for beepbox_to_wasm4 (Tkinter)."""

import os
import subprocess
import sys
import tkinter as tk
from tkinter import filedialog

PALETTE = {
    "bg": "#1e1e1e",
    "panel": "#252526",
    "fg": "#e6e6e6",
    "entry_bg": "#2d2d30",
    "button_bg": "#3a3a3a",
}


def _default_output_path(input_path: str) -> str:
    if not input_path:
        return ""
    base, _ = os.path.splitext(input_path)
    return base + ".rs"


def _default_resname(input_path: str) -> str:
    if not input_path:
        return ""
    name = os.path.splitext(os.path.basename(input_path))[0].lower()
    return "".join(c if c.isalnum() else "_" for c in name)


def build_command(
    input_path: str,
    resname: str,
    include_driver: bool,
    output_path: str = "",
    preview_path: str = "",
) -> list[str]:
    cmd = [sys.executable, os.path.join(os.path.dirname(os.path.abspath(__file__)), "beepbox_to_wasm4.py")]
    cmd += [input_path, resname, "true" if include_driver else "false"]
    if output_path:
        cmd += ["--output", output_path]
    if preview_path:
        cmd += ["--preview-midi", preview_path]
    return cmd


class App(tk.Tk):
    def __init__(self) -> None:
        super().__init__()
        self.title("beepbox_to_wasm4")
        self.configure(bg=PALETTE["bg"])
        self.input_var = tk.StringVar()
        self.output_var = tk.StringVar()
        self.resname_var = tk.StringVar()
        self.preview_var = tk.StringVar()
        self.driver_var = tk.BooleanVar(value=True)
        self._build_ui()

    def _build_ui(self) -> None:
        frame = tk.Frame(self, bg=PALETTE["panel"], padx=8, pady=8)
        frame.pack(fill="both", expand=True)
        rows = [
            ("BeepBox JSON", self.input_var, self._browse_input),
            ("Output .rs", self.output_var, self._browse_output),
            ("Resource name", self.resname_var, None),
            ("MIDI preview", self.preview_var, self._browse_preview),
        ]
        for row, (label, var, browse) in enumerate(rows):
            tk.Label(frame, text=label, bg=PALETTE["panel"], fg=PALETTE["fg"]).grid(
                row=row, column=0, sticky="w"
            )
            tk.Entry(
                frame, textvariable=var, width=48, bg=PALETTE["entry_bg"], fg=PALETTE["fg"],
                insertbackground=PALETTE["fg"],
            ).grid(row=row, column=1, sticky="we", padx=4, pady=2)
            if browse:
                tk.Button(frame, text="...", command=browse, bg=PALETTE["button_bg"], fg=PALETTE["fg"]).grid(
                    row=row, column=2
                )
        tk.Checkbutton(
            frame, text="Include driver", variable=self.driver_var, bg=PALETTE["panel"], fg=PALETTE["fg"],
            selectcolor=PALETTE["entry_bg"],
        ).grid(row=len(rows), column=1, sticky="w")
        tk.Button(frame, text="Convert", command=self._run, bg=PALETTE["button_bg"], fg=PALETTE["fg"]).grid(
            row=len(rows) + 1, column=1, sticky="e", pady=4
        )
        self.log_text = tk.Text(frame, height=12, bg=PALETTE["entry_bg"], fg=PALETTE["fg"])
        self.log_text.grid(row=len(rows) + 2, column=0, columnspan=3, sticky="nsew")
        frame.columnconfigure(1, weight=1)
        frame.rowconfigure(len(rows) + 2, weight=1)

    def _browse_input(self) -> None:
        path = filedialog.askopenfilename(filetypes=[("BeepBox JSON", "*.json"), ("All files", "*.*")])
        if not path:
            return
        self.input_var.set(path)
        if not self.output_var.get().strip():
            self.output_var.set(_default_output_path(path))
        if not self.resname_var.get().strip():
            self.resname_var.set(_default_resname(path))

    def _browse_output(self) -> None:
        path = filedialog.asksaveasfilename(defaultextension=".rs", filetypes=[("Rust", "*.rs")])
        if path:
            self.output_var.set(path)

    def _browse_preview(self) -> None:
        path = filedialog.asksaveasfilename(defaultextension=".mid", filetypes=[("MIDI", "*.mid")])
        if path:
            self.preview_var.set(path)

    def _log(self, msg: str) -> None:
        self.log_text.insert("end", msg + "\n")
        self.log_text.see("end")

    def _run(self) -> None:
        input_path = self.input_var.get().strip()
        output_path = self.output_var.get().strip()
        resname = self.resname_var.get().strip()

        if not input_path or not output_path or not resname:
            self._log("Error: input, output and resource name are required.")
            return

        cmd = build_command(
            input_path,
            resname,
            self.driver_var.get(),
            output_path,
            self.preview_var.get().strip(),
        )
        self._log("Running: " + " ".join(cmd))

        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as exc:
            self._log(f"Exception: {exc}")
            return
        if result.stdout:
            self._log(result.stdout.strip())
        if result.stderr:
            self._log(result.stderr.strip())
        if result.returncode == 0:
            self._log("Done.")
        else:
            self._log(f"Failed (code {result.returncode}).")


def main() -> int:
    app = App()
    app.mainloop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
