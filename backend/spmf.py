def _angka(teks):
    return int(teks) if teks.lstrip('-').isdigit() else float(teks)


def baca_spmf(path):
    # Format SPMF: "item item ...:utilitas_transaksi:utilitas utilitas ..."
    with open(path, encoding='utf-8') as f:
        for nomor, baris in enumerate(f, start=1):
            baris = baris.strip()
            if not baris or baris[0] in '#%@':
                continue
            bagian = baris.split(':')
            if len(bagian) != 3:
                raise ValueError(f"Baris {nomor}: format tidak valid, harus 'items:TU:utilitas'")
            try:
                items = [int(x) for x in bagian[0].split()]
                transaction_utility = _angka(bagian[1].strip())
                utilities = [_angka(x) for x in bagian[2].split()]
            except ValueError as e:
                raise ValueError(f"Baris {nomor}: angka tidak valid ({e})") from e
            if len(items) != len(utilities):
                raise ValueError(f"Baris {nomor}: jumlah item dan utilitas tidak sama")
            yield items, utilities, transaction_utility


def tulis_hasil(path, hasil):
    with open(path, 'w', encoding='utf-8') as w:
        for itemset, utility in hasil:
            w.write(' '.join(str(item) for item in itemset))
            w.write(f" #UTIL: {utility}\n")
